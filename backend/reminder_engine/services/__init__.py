"""Reminder Engine - Services"""
