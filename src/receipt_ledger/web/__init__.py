"""
HTTP endpoints (Django): scheduled pipeline trigger and receipt upload.
"""
