"""Deliverability gate and revenue baseline engine."""
