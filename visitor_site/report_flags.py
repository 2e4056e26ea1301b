from .config import get_settings
from .main import build_store


def report_flagged_visits(store):
    flagged = 0
    print(f"{'Time (UTC)':<26} | {'IP':<16} | {'Flags':<10} | {'Evidence'}")
    print("-" * 90)

    for record in store.iter_records():
        heuristic = record.get("network", {}).get("proxyVpnHeuristic") or {}
        labels = [name for name, key in (("proxy", "usingProxy"), ("vpn", "usingVPN")) if heuristic.get(key)]
        if not labels:
            continue

        flagged += 1
        reasons = heuristic.get("proxy", {}).get("reasons", []) + heuristic.get("vpn", {}).get("reasons", [])
        print(f"{record.get('timestamp', ''):<26} | {record['network']['ip']:<16} | {','.join(labels):<10} | {'; '.join(reasons)}")

    print("-" * 90)
    print(f"Total flagged visits: {flagged}")
    return flagged


if __name__ == "__main__":
    report_flagged_visits(build_store(get_settings()))
