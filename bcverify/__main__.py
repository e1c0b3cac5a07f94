"""
Allow running bcverify as a module:

    python -m bcverify <unit> [options]

Delegates to bcverify.cli:main().
"""
import sys
from .cli import main

sys.exit(main())
