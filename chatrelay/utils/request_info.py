from fastapi import Request


def get_client_ip(request: Request) -> str:
    """Extract client IP address from the request"""
    # Try to get IP from headers first (for proxy/load balancer scenarios)
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    # Fallback to direct client IP
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_user_agent(request: Request) -> str:
    return request.headers.get("user-agent", "unknown")
