"""
数据流分层架构
  Layer 1 – Acquisition  : 上游行情获取（4 路并发）
  Layer 2 – Processing   : 序列标准化（日线截取 / 4H 降采样）
  Layer 3 – Cache        : 内存快照（原子读写）
  Layer 4 – Persistence  : 磁盘快照与备份轮转
  Layer 5 – Replication  : 远端副本上传
"""
