"""项目内使用的自定义异常定义。"""


class UltraArtError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(UltraArtError):
    """配置不合法时抛出。"""


class DecodeError(UltraArtError):
    """源图片无法解码或尺寸为零。"""


class MetadataUnsupported(UltraArtError):
    """输出容器不支持密度元数据（非致命，仅记录日志）。"""


class ImageWriteError(UltraArtError):
    """输出写入失败。"""


class CapacityExceeded(UltraArtError):
    """提交的文件数量超过批次上限，整批拒绝。"""


class ItemBusyError(UltraArtError):
    """条目正在处理中，当前操作不被允许。"""


class BatchBusyError(UltraArtError):
    """已有批处理在运行。"""


class ExportFetchError(UltraArtError):
    """导出时读取某个输出失败，整个导出中止。"""


class ExportBusyError(UltraArtError):
    """已有导出任务在运行。"""


class AnalysisServiceError(UltraArtError):
    """外部分析服务调用失败。"""
