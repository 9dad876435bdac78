"""Clinic application for the ClinicHub backend.

This package contains models, serializers, services, views and route
registrations for patients, the queue, billing, panel claims,
inventory and the Stripe-backed subscription layer.
"""
