import os
import socket

import uvicorn


def get_lan_ip():
    try:
        # Connect to a public DNS server to determine the route
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except OSError:
        return "127.0.0.1"


def main():
    lan_ip = get_lan_ip()
    port = int(os.getenv("PORT", "8000"))

    # Phones on the LAN reach the approve endpoints through this address
    cert_file = os.getenv("SSL_CERTFILE")
    key_file = os.getenv("SSL_KEYFILE")
    scheme = "https" if cert_file and key_file else "http"

    print("\n" + "=" * 60)
    print("SERVER STARTING")
    print(f"LAN URL:  {scheme}://{lan_ip}:{port}")
    print(f"Local:    {scheme}://127.0.0.1:{port}")
    print("=" * 60 + "\n")

    kwargs = {}
    if scheme == "https":
        kwargs = {"ssl_certfile": cert_file, "ssl_keyfile": key_file}

    uvicorn.run(
        "devicelink.main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("RELOAD", "false").lower() == "true",
        **kwargs,
    )


if __name__ == "__main__":
    main()
