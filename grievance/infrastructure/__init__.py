"""
Infrastructure Layer
=====================

Cross-module technical concerns:
- Database engine and session management
"""
