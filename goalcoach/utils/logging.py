from datetime import datetime


def log(module: str, message: str, level: str = "INFO"):
    """
    Consistent logging helper.
    """
    icon = "✓" if level == "SUCCESS" else "⚠" if level == "WARNING" else "✗" if level == "ERROR" else "ℹ"
    stamp = datetime.now().strftime("%H:%M:%S")
    print(f"{stamp} [{module}] {icon} {message}")
