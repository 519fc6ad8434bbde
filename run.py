#!/usr/bin/env python3
"""Run zfsborg from a source checkout"""
import sys
from zfsborg.cli import main

if __name__ == '__main__':
    sys.exit(main())
