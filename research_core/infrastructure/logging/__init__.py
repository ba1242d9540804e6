"""JSON 行格式的文件日志。"""
