"""Low voltage inventory tracking for Procore projects"""
