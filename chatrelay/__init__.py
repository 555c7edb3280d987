"""
chatrelay
~~~~~~~~~

实时信令与聊天中继服务。
"""
