"""procmux 入口。

支持: python -m procmux
"""

from .app import main

if __name__ == "__main__":
    main()
