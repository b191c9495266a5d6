"""Upstream access, scheduling, persistence and orchestration helpers."""
