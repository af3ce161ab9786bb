"""
系统常量配置
"""


class Constants:
    """系统常量（system_config.json 缺省值）"""
    # 模型输出配置
    MODEL_INPUT_SIZE = 640  # 模型输入分辨率（正方形，像素）
    NUM_CLASSES = 80  # COCO 类别数
    BOX_CHANNELS = 4  # (cx, cy, w, h)

    # 检测配置
    CONFIDENCE_THRESHOLD = 0.25  # 解码置信度阈值（包含等于）
    NMS_IOU_THRESHOLD = 0.45  # 同类 NMS IoU 阈值
    MAX_DETECTIONS = 200  # NMS 后最多保留的检测数

    # 跟踪配置
    POSITION_MATCH_THRESHOLD = 0.2  # 匹配距离阈值（米）
    STABILITY_FRAME_COUNT = 3  # 连续命中多少帧后显示
    REMOVAL_FRAME_COUNT = 5  # 连续丢失多少帧后删除
    MIN_CONFIDENCE = 0.15  # 进入跟踪的最低置信度

    # 标签锁定配置
    LOCK_CONFIDENCE_THRESHOLD = 0.7  # 锁定置信度阈值
    LOCK_FRAME_COUNT = 3  # 连续高置信度帧数

    # 世界锁定配置
    MOVEMENT_UPDATE_THRESHOLD = 0.1  # 锚点更新距离阈值（米）

    # 显示配置
    MARKER_AUTO_HIDE_DELAY = 2.0  # 标记多久未更新后自动隐藏（秒）

    UNKNOWN_LABEL = "unknown"
