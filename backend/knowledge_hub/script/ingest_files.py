"""
Nạp hàng loạt file .txt / .md từ một thư mục vào kho kiến thức.

    python -m knowledge_hub.script.ingest_files ./data/raw --title "ESP32"

Kho được tìm theo tên (không phân biệt hoa thường), tạo mới nếu chưa có.
"""

import argparse
import asyncio
import os
import sys
from typing import List

from dotenv import load_dotenv

# Nạp .env trước khi Settings được khởi tạo
load_dotenv()

from knowledge_hub.core.api.deps import build_services
from knowledge_hub.core.config import get_settings
from knowledge_hub.core.exceptions import KnowledgeHubError
from knowledge_hub.core.logging import setup_logging
from knowledge_hub.database.postgre import SessionLocal, init_models

TEXT_EXTENSIONS = (".txt", ".md")


def collect_files(directory: str) -> List[str]:
    """Các file text trong thư mục (không đệ quy), sắp theo tên."""
    paths = []
    for name in sorted(os.listdir(directory)):
        path = os.path.join(directory, name)
        if os.path.isfile(path) and name.lower().endswith(TEXT_EXTENSIONS):
            paths.append(path)
    return paths


async def find_or_create_knowledge_base(store, title: str, description: str = ""):
    for kb in await store.find_knowledge_bases_by_title(title):
        if kb.title.casefold() == title.casefold():
            return kb
    print(f"Tạo kho kiến thức mới: {title}")
    return await store.create_knowledge_base(title, description)


async def ingest_directory(directory: str, title: str, description: str = "", services=None) -> int:
    """Trả về số file nạp thành công."""
    settings = get_settings()
    if services is None:
        await init_models()
        services = build_services(settings, SessionLocal)

    files = collect_files(directory)
    if not files:
        print("Không có dữ liệu để import.")
        return 0

    kb = await find_or_create_knowledge_base(services.store, title, description)
    print(f"Bắt đầu nạp {len(files)} file vào '{kb.title}'...")

    succeeded = 0
    for path in files:
        name = os.path.basename(path)
        with open(path, "rb") as f:
            payload = f.read()
        try:
            result = await services.pipeline.ingest(kb.id, name, payload)
        except KnowledgeHubError as e:
            print(f"Lỗi {name}: {e.message}")
            continue
        succeeded += 1
        print(f"  {name}: {result.inserted_count}/{result.chunk_count} chunk")

    print(f"\nHOÀN TẤT: {succeeded}/{len(files)} file.")
    return succeeded


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Ingest .txt/.md files into a knowledge base")
    parser.add_argument("directory")
    parser.add_argument("--title", required=True, help="Tên kho kiến thức")
    parser.add_argument("--description", default="")
    args = parser.parse_args(argv)

    setup_logging(get_settings().LOG_LEVEL)

    if not os.path.isdir(args.directory):
        print(f"Không tìm thấy thư mục: {args.directory}")
        return 1

    succeeded = asyncio.run(ingest_directory(args.directory, args.title, args.description))
    return 0 if succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
