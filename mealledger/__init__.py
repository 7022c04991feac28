"""
餐次资格与计费账本服务
"""
