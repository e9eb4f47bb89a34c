"""
Dashboard widgets built on the ServiceManager.
"""

from feedboard.datasource.base import BaseWidget, WidgetConfigError, WidgetData
from feedboard.datasource.bilibili import BilibiliVideosWidget
from feedboard.datasource.douyu import DouyuLiveWidget
from feedboard.datasource.gitee import GiteeReposWidget
from feedboard.datasource.registry import WidgetRegistry, default_registry
from feedboard.datasource.scheduler import RefreshScheduler
from feedboard.datasource.weibo import WeiboHotSearchWidget
from feedboard.datasource.zhihu import ZhihuTrendingWidget

__all__ = [
    "BaseWidget",
    "WidgetConfigError",
    "WidgetData",
    "BilibiliVideosWidget",
    "DouyuLiveWidget",
    "GiteeReposWidget",
    "WeiboHotSearchWidget",
    "ZhihuTrendingWidget",
    "WidgetRegistry",
    "default_registry",
    "RefreshScheduler",
]
