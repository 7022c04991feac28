"""
核心基础设施：数据库、时钟、异常、日志和授权
"""
