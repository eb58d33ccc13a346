# ==============================================================================
# FILE: netflowmon/core/services.py
# PURPOSE: Well-known port labels for the port histogram.
# ==============================================================================
from typing import Optional

KNOWN_PORTS = {
    # Web
    80: "HTTP", 443: "HTTPS", 8080: "HTTP-Alt", 8443: "HTTPS-Alt",
    # Email
    25: "SMTP", 110: "POP3", 143: "IMAP", 465: "SMTPS", 587: "SMTP-Submission",
    993: "IMAPS", 995: "POP3S",
    # File transfer / remote shell
    20: "FTP-Data", 21: "FTP", 22: "SSH", 23: "Telnet", 69: "TFTP", 445: "SMB",
    # Network services
    53: "DNS", 67: "DHCP-Server", 68: "DHCP-Client", 123: "NTP", 161: "SNMP",
    162: "SNMP-Trap", 514: "Syslog", 853: "DNS-over-TLS",
    # Databases
    1433: "MSSQL", 3306: "MySQL", 5432: "PostgreSQL", 6379: "Redis", 27017: "MongoDB",
    # Remote desktop
    3389: "RDP", 5900: "VNC",
    # Gaming & media
    3478: "STUN", 5349: "STUN-TLS", 25565: "Minecraft", 27015: "Steam",
    # Development & monitoring
    3000: "Node.js", 5000: "Flask", 8000: "HTTP-Dev", 9000: "Jenkins",
    9090: "Prometheus-Web", 9100: "Prometheus", 15672: "RabbitMQ-Management",
}


def service_name(port: Optional[int]) -> Optional[str]:
    if port is None:
        return None
    return KNOWN_PORTS.get(port)
