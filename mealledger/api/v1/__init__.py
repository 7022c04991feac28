"""
API v1 路由
"""
