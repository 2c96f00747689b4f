"""
Tube Scriber

Telegram bot that lets chats follow YouTube channels, holding one shared
WebSub lease per channel and fanning new-video notifications out to every
chat that follows it.
"""

__version__ = "0.1.0"
