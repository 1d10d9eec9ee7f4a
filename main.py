"""
Run the email onebox service from a source checkout.

Equivalent to ``python -m onebox``; see ``onebox.cli`` for options.
"""

import sys

from onebox.cli import main

if __name__ == "__main__":
    sys.exit(main())
