"""存储层异常

只用于存储介质层面的故障。NOT_FOUND / ALREADY_CLAIMED 等预期结果
走 models.results，不使用异常。
"""


class TaskStoreError(Exception):
    """任务存储基础异常 -- 对 worker 而言不可恢复"""


class CorruptTaskRecordError(TaskStoreError):
    """任务记录无法解析（JSON 损坏或字段缺失）"""

    def __init__(self, name: str, original_error: Exception) -> None:
        """
        Args:
            name: 记录名
            original_error: 解析时的原始异常
        """
        super().__init__(f"任务记录损坏: {name} -- {original_error}")
        self.name = name
        self.original_error = original_error
