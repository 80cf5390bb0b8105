#!/usr/bin/env python3
"""
Precompute face descriptors for users in the gallery file.

Usage:
    python scripts/preload_descriptors.py                     # all users
    python scripts/preload_descriptors.py --limit 20          # first 20 users
    python scripts/preload_descriptors.py --refresh ID [ID ...]
    python scripts/preload_descriptors.py --gallery data/users.json
"""
import sys
import os
import argparse
import json
import logging

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
from engines.face_matching import JsonGalleryProvider, ModelUnavailable
from services.face_service import FaceService

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Precompute face descriptors for gallery users")
    parser.add_argument('--gallery', default=Config.GALLERY_FILE, help="JSON file of user records")
    parser.add_argument('--limit', type=int, default=None, help="only the first N users")
    parser.add_argument('--refresh', nargs='+', metavar='USER_ID',
                        help="drop and recompute descriptors for these users")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    if not os.path.isfile(args.gallery):
        logger.error(f"Gallery file not found: {args.gallery}")
        return 1

    try:
        service = FaceService(Config, gallery_provider=JsonGalleryProvider(args.gallery))
    except ModelUnavailable as e:
        logger.error(f"Face model not available: {e}")
        return 1

    try:
        if args.refresh:
            report = service.refresh(args.refresh)
        else:
            identities = service.gallery.list_identities(limit=args.limit)
            logger.info(f"Preloading descriptors for {len(identities)} users")
            report = service.engine.preload(identities)
        print(json.dumps(report.to_dict(), indent=2))
        return 0 if report.errors == 0 else 2
    finally:
        service.shutdown()


if __name__ == '__main__':
    sys.exit(main())
