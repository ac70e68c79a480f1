"""
Line Monitor - 产线工位监控决策核心

负责：
- 每 5s 拉取所有已注册工位的节拍/KPI 数据
- 按目标值对每个指标进行三级分级（OK / WARNING / CRITICAL）
- 按工位汇总分级（最差者胜出）
- 识别当前瓶颈工位，变化时发出事件
- 验证所有工位数据可用性，缺失时发出告警
"""

__version__ = "1.0.0"
__author__ = "AI-B"
