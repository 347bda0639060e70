"""Equipment Tracker - Reminder & Notification Scheduling Engine"""
