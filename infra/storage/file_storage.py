"""
存储适配器 (Storage Adapter)
书籍数据库只通过这组窄接口访问文件：exists / read / write / create_folder / delete / list_files。
路径统一使用 / 分隔的相对路径，由具体实现解析到真实位置。
"""
import os
import shutil
import logging
from typing import List, Optional

from core.exceptions import StorageOperationError

logger = logging.getLogger(__name__)


def join_path(*parts: str) -> str:
    """用 / 拼接路径片段，忽略空片段"""
    cleaned = [p.strip("/") for p in parts if p and p.strip("/")]
    prefix = "/" if parts and parts[0] and parts[0].startswith("/") else ""
    return prefix + "/".join(cleaned)


def base_name(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1]


class StorageAdapter:
    """存储适配器接口，所有方法失败时抛出 StorageOperationError"""

    def exists(self, path: str) -> bool:
        raise NotImplementedError

    def read(self, path: str) -> str:
        raise NotImplementedError

    def write(self, path: str, text: str):
        raise NotImplementedError

    def create_folder(self, path: str):
        raise NotImplementedError

    def delete(self, path: str):
        raise NotImplementedError

    def list_files(self, folder: str) -> List[str]:
        """列出目录下的文件名（不含子目录），按名称排序"""
        raise NotImplementedError


class LocalFileStorage(StorageAdapter):
    """
    基于本地文件系统的存储适配器（UTF-8）。

    Args:
        base_dir (str, optional): 根目录，相对路径都以此为基准；为空时使用当前工作目录。
    """

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = os.path.abspath(base_dir) if base_dir else os.getcwd()

    def resolve(self, path: str) -> str:
        return os.path.join(self.base_dir, *[p for p in path.split("/") if p])

    def exists(self, path: str) -> bool:
        return os.path.exists(self.resolve(path))

    def read(self, path: str) -> str:
        full_path = self.resolve(path)
        try:
            with open(full_path, "r", encoding="utf-8") as f:
                return f.read()
        except OSError as e:
            raise StorageOperationError("read", path, str(e)) from e

    def write(self, path: str, text: str):
        full_path = self.resolve(path)
        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with open(full_path, "w", encoding="utf-8", newline="\n") as f:
                f.write(text)
        except OSError as e:
            raise StorageOperationError("write", path, str(e)) from e

    def create_folder(self, path: str):
        try:
            os.makedirs(self.resolve(path), exist_ok=True)
        except OSError as e:
            raise StorageOperationError("create_folder", path, str(e)) from e

    def delete(self, path: str):
        full_path = self.resolve(path)
        if not os.path.exists(full_path):
            logger.debug(f"待删除的路径不存在，忽略: {path}")
            return
        try:
            if os.path.isdir(full_path):
                shutil.rmtree(full_path)
            else:
                os.remove(full_path)
        except OSError as e:
            raise StorageOperationError("delete", path, str(e)) from e

    def list_files(self, folder: str) -> List[str]:
        full_path = self.resolve(folder)
        if not os.path.isdir(full_path):
            return []
        try:
            return sorted(
                name for name in os.listdir(full_path)
                if os.path.isfile(os.path.join(full_path, name))
            )
        except OSError as e:
            raise StorageOperationError("list_files", folder, str(e)) from e
