"""Booking domain"""
