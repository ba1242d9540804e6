"""命令行交互层。"""
