#!/usr/bin/env python3
"""
Development server starter script.
Checks dependencies, prints the endpoints and starts the Flask app.
"""

import os
import socket
import sys


# ANSI color codes for pretty terminal output
class Colors:
    OKCYAN = '\033[96m'
    OKGREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'


REQUIRED_PACKAGES = [
    ('flask', 'Flask'),
    ('flask_cors', 'flask-cors'),
    ('bs4', 'beautifulsoup4'),
    ('requests', 'requests'),
    ('cloudscraper', 'cloudscraper'),
]


def print_banner():
    print(f"\n{Colors.OKCYAN}{'='*60}{Colors.ENDC}")
    print(f"{Colors.BOLD}{Colors.OKGREEN}  🛒  Amazon Product Fetcher - Development Server{Colors.ENDC}")
    print(f"{Colors.OKCYAN}{'='*60}{Colors.ENDC}\n")


def check_python_version():
    """Check if Python version is compatible."""
    version = sys.version_info
    if version < (3, 8):
        print(f"{Colors.FAIL}❌ Python 3.8+ required. You have {version.major}.{version.minor}{Colors.ENDC}")
        sys.exit(1)
    print(f"{Colors.OKGREEN}✅ Python {version.major}.{version.minor}.{version.micro}{Colors.ENDC}")


def missing_dependencies(packages=REQUIRED_PACKAGES):
    """Return the distribution names of packages that fail to import."""
    missing = []
    for import_name, package_name in packages:
        try:
            __import__(import_name)
            print(f"{Colors.OKGREEN}✅ {package_name} installed{Colors.ENDC}")
        except ImportError:
            missing.append(package_name)
            print(f"{Colors.FAIL}❌ {package_name} not installed{Colors.ENDC}")
    return missing


def get_local_ip():
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        local_ip = s.getsockname()[0]
        s.close()
        return local_ip
    except OSError:
        return "localhost"


def print_server_info(port):
    local_ip = get_local_ip()

    print(f"\n{Colors.BOLD}📡 Listening on:{Colors.ENDC}")
    print(f"   {Colors.OKCYAN}http://localhost:{port}{Colors.ENDC}")
    if local_ip != "localhost":
        print(f"   {Colors.OKCYAN}http://{local_ip}:{port}{Colors.ENDC} {Colors.WARNING}(network access){Colors.ENDC}")

    print(f"\n{Colors.BOLD}📚 API Endpoints:{Colors.ENDC}")
    print(f"   POST http://localhost:{port}/fetch-amazon-product {Colors.WARNING}(JSON body: {{'url': '...'}}){Colors.ENDC}")
    print(f"   GET  http://localhost:{port}/?url=<amazon_url_or_asin>")
    print(f"   GET  http://localhost:{port}/healthz")

    print(f"\n{Colors.BOLD}🧪 Quick Test:{Colors.ENDC}")
    print(f"   {Colors.OKCYAN}curl -X POST http://localhost:{port}/fetch-amazon-product \\")
    print(f"        -H 'Content-Type: application/json' -d '{{\"url\": \"B0EXAMPLE1\"}}'{Colors.ENDC}")

    print(f"\n{Colors.BOLD}💡 Tips:{Colors.ENDC}")
    print("   • Responses are always HTTP 200; check the 'error' field")
    print("   • SCRAPER_USE_CLOUDSCRAPER=0 switches to a plain requests session")
    print(f"   • Press {Colors.BOLD}Ctrl+C{Colors.ENDC} to stop the server\n")


def main():
    print_banner()

    print(f"{Colors.BOLD}🔍 Checking requirements...{Colors.ENDC}\n")
    check_python_version()
    missing = missing_dependencies()
    if missing:
        print(f"\n{Colors.WARNING}Missing dependencies. Install with:{Colors.ENDC}")
        print(f"{Colors.BOLD}  pip3 install -e .{Colors.ENDC}\n")
        sys.exit(1)

    port = int(os.environ.get("PORT", 8080))
    print_server_info(port)

    try:
        import server
        server.app.run(host="0.0.0.0", port=port)
    except KeyboardInterrupt:
        print(f"\n\n{Colors.WARNING}🛑 Server stopped by user{Colors.ENDC}\n")
        sys.exit(0)


if __name__ == "__main__":
    main()
