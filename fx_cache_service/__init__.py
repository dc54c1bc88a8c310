"""
FX 行情缓存服务
独立的 FastAPI 微服务，在限流的上游行情源前维护一份共享的内存快照

架构分层：
  数据获取层 (Acquisition)  → 并发拉取 Yahoo Finance 原始 K 线
  处理层     (Processing)   → 截取、降采样、过滤无效收盘价
  缓存层     (Cache)        → 进程内唯一的当前快照，原子替换
  持久化层   (Persistence)  → 磁盘最新快照 + 时间戳备份链（保留最近 10 份）
  复制层     (Replication)  → 可选的远端上传，尽力而为
"""

__version__ = "1.0.0"
