"""依赖解析与安装

拆分说明:
- semver_range.py: npm 风格版本范围
- resolver.py: registry 版本解析
- fetcher.py: tarball 下载解压
- manager.py: analyze / install 门面
"""

from sandpm.core.dep.fetcher import ArchiveFetcher
from sandpm.core.dep.manager import PackageManager
from sandpm.core.dep.resolver import VersionResolver
from sandpm.core.dep.semver_range import VersionRange, max_satisfying

__all__ = [
    "ArchiveFetcher",
    "PackageManager",
    "VersionRange",
    "VersionResolver",
    "max_satisfying",
]
