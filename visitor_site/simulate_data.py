import requests
import uuid
import random
import time

# Configuration
COLLECT_ENDPOINT = "http://localhost:3000/api/collect"

# Simulation Parameters
NUM_VISITORS = 20
VISITS_PER_VISITOR = 5

USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36",
]

# Documentation ranges (RFC 5737) plus one address from the example VPN table
FORWARDED_IPS = ["203.0.113.5", "198.51.100.23", "192.0.2.44", "45.32.10.10", None]

SCREENS = [(1920, 1080), (1366, 768), (390, 844), (2560, 1440)]


def generate_visitor():
    width, height = random.choice(SCREENS)
    return {
        "session_id": f"sim_{uuid.uuid4().hex[:12]}",
        "user_agent": random.choice(USER_AGENTS),
        "ip": random.choice(FORWARDED_IPS),
        "screen": {"width": width, "height": height, "colorDepth": 24, "pixelRatio": random.choice([1, 2])},
    }


def simulate_visitor():
    visitor = generate_visitor()
    print(f"Simulating visitor: {visitor['session_id']} ({visitor['ip'] or 'direct'})")

    headers = {"User-Agent": visitor["user_agent"], "Accept-Language": "en-US,en;q=0.9"}
    if visitor["ip"]:
        headers["X-Forwarded-For"] = f"{visitor['ip']}, 10.0.0.1"

    for _ in range(random.randint(1, VISITS_PER_VISITOR)):
        payload = {
            "sessionId": visitor["session_id"],
            "screen": visitor["screen"],
            "timezone": {"timezone": "UTC", "timezoneOffset": 0},
            "clientData": {"simulated": True},
        }
        try:
            requests.post(COLLECT_ENDPOINT, json=payload, headers=headers, timeout=5)
        except requests.RequestException as e:
            print(f"Error sending visit: {e}")

        time.sleep(0.05)


if __name__ == "__main__":
    print(f"Starting simulation of {NUM_VISITORS} visitors...")
    start_time = time.time()

    for i in range(NUM_VISITORS):
        simulate_visitor()

    print(f"Simulation complete in {time.time() - start_time:.2f}s")
