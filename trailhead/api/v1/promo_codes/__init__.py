"""Promo code endpoints"""
