"""CLI shim -- delegates to extractocr.cli.main().

Usage:
    python extract_ocr.py --config config.yaml
    python extract_ocr.py --mode missing --item-ids "2-6 8"
"""

from extractocr.cli import main

if __name__ == "__main__":
    main()
