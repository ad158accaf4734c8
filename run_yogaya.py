#!/usr/bin/env python3
"""
Direct runner for yogaya
Runs the CLI from a source checkout without installing the package
"""

import sys
import os

# Add the src directory to Python path
current_dir = os.path.dirname(os.path.abspath(__file__))
src_dir = os.path.join(current_dir, 'src')
sys.path.insert(0, src_dir)

from yogaya.cli import main

if __name__ == "__main__":
    main()
