"""
Webix Udirdlaga 多租户后端

控制面数据库保存组织与平台管理员，每个租户组织拥有独立的数据库。
"""

__version__ = "1.0.0"
