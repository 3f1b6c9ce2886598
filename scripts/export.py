#!/usr/bin/env python
"""Notionエクスポートスクリプト"""

import sys
from pathlib import Path

# プロジェクトルートをパスに追加
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from notion_pull.cli import main


if __name__ == "__main__":
    sys.exit(main())
