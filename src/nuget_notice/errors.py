from __future__ import annotations


class NoticeError(Exception):
    """
    nuget-notice 所有可预期错误的基类（会让整次运行以失败状态结束）。
    """


class GraphEmptyError(NoticeError):
    """
    没有任何项目被标记为部署根。
    """

    def __init__(self, message: str = "No projects to include, notice not generated") -> None:
        super().__init__(message)


class ResolutionError(NoticeError):
    """
    无法确定组件的具体版本（还原锁文件中缺失或存在多个匹配）。
    """

    def __init__(self, package_id: str, message: str | None = None) -> None:
        self.package_id = package_id
        super().__init__(
            message
            or f"Unable to find unique version of package {package_id}, restoring nuget packages first may fix this."
        )


class UnresolvedComponentError(NoticeError):
    """
    所有包源都无法提供该组件的归档；汇总每个包源的错误信息。
    """

    def __init__(self, identity: object, errors: list[str]) -> None:
        self.identity = identity
        self.errors = list(errors)
        super().__init__(
            f"Package {identity} not found in any of the configured repositories: {', '.join(self.errors)}"
        )


class LicenseEvidenceError(NoticeError):
    """
    已获取的包内许可证信息损坏或不可读。
    """

    def __init__(self, package_id: str, cause: BaseException | None = None) -> None:
        self.package_id = package_id
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Error loading license metadata for package {package_id}{detail}")
