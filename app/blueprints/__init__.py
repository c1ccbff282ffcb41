"""
Unit Escalation Engine
Blueprint registry.

    units_bp      /api/v1/units/*, /api/v1/proofs/*
    attention_bp  /api/v1/attention-queue
    cron_bp       /api/v1/cron/*
    health_bp     /api/v1/health/*
"""
