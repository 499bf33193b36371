"""
Core building blocks shared by listing and streaming.
"""
