"""Observability - structured logging, request correlation, health checks"""
