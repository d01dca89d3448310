"""
Work Time Consolidation Service
Blueprint registry.

    health_bp         /api/v1/health         readiness / liveness probes
    time_tracking_bp  /api/v1/time-tracking  consolidation and record lifecycle
"""
