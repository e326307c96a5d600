"""
Example: Using the Custodian Server API

This example shows how to manage policies and run dry-run scans against
the Custodian HTTP server using Python requests.

Prerequisites:
    pip install requests

Start the server first:
    custodianctl serve --port 8000 --snapshots examples/resources.yaml

Then run this script:
    python server_api_example.py
"""

import json
import sys
from pathlib import Path

import requests
import yaml

BASE_URL = "http://localhost:8000"
POLICY_DIR = Path(__file__).resolve().parent.parent / "policies"


def check_health():
    """Check if the server is running."""
    try:
        response = requests.get(f"{BASE_URL}/health", timeout=5)
    except requests.ConnectionError:
        return False
    print(f"Health Status: {response.json()}")
    return response.status_code == 200


def put_policy(path: Path):
    """Create or update a policy from a YAML file."""
    with open(path, encoding="utf-8") as f:
        policy = yaml.safe_load(f)
    name = policy.pop("name")

    response = requests.put(f"{BASE_URL}/api/v1/policies/{name}", json=policy, timeout=10)
    if response.status_code == 200:
        data = response.json()
        print(f"Saved {name} (version {data['version']})")
        return data
    else:
        print(f"Error: {response.status_code} - {response.json()['error']['message']}")
        return None


def list_policies():
    """List stored policies."""
    data = requests.get(f"{BASE_URL}/api/v1/policies", timeout=10).json()
    print(f"\nStored policies: {data['count']}")
    for policy in data["policies"]:
        print(f"  {policy['name']:<24} {policy['resource_type']:<6} v{policy['version']} ({policy['status']})")
    return data


def scan_policy(name: str):
    """Run a dry-run scan of one policy."""
    print(f"\nScanning '{name}'...")
    response = requests.post(f"{BASE_URL}/api/v1/scan/{name}", timeout=60)

    if response.status_code == 200:
        data = response.json()
        summary = data["summary"]
        print(f"Matched: {summary['matched_resources']}/{summary['total_scanned']}")
        print(f"Actions planned: {summary['actions_planned']} ({summary['high_risk_actions']} high risk)")
        print(f"Estimated savings: ${summary['estimated_cost_savings']:.2f}/month")
        for resource in data["matched_resources"]:
            actions = ", ".join(a["type"] for a in resource["planned_actions"])
            print(f"  {resource['id']} [{resource['risk_level']}] {actions}")
        return data
    else:
        print(f"Error: {response.status_code} - {response.text}")
        return None


def scan_all():
    """Run a dry-run scan of every active policy."""
    data = requests.post(f"{BASE_URL}/api/v1/scan", timeout=300).json()
    print(f"\nBatch summary: {json.dumps(data['summary'], indent=2)}")
    if data["errors"]:
        print(f"Errors: {data['errors']}")
    return data


def show_history(name: str):
    """Show archived versions of a policy."""
    data = requests.get(f"{BASE_URL}/api/v1/policies/{name}/history", timeout=10).json()
    print(f"\nHistory of {name}: {data['count']} archived version(s)")
    for entry in data["history"]:
        print(f"  v{entry['version']} archived {entry['saved_at']}")
    return data


def main():
    """Run all examples."""
    print("Custodian Server API Example")
    print("=" * 50)

    if not check_health():
        print("\nServer is not running!")
        print("Start it with: custodianctl serve --port 8000 --snapshots examples/resources.yaml")
        sys.exit(1)

    for path in sorted(POLICY_DIR.glob("*.yaml")):
        put_policy(path)

    list_policies()
    scan_policy("stale-ec2")
    scan_all()

    # Saving again archives the previous version
    put_policy(POLICY_DIR / "stale-ec2.yaml")
    show_history("stale-ec2")

    print("\n" + "=" * 50)
    print("Example complete!")
    print(f"API documentation at: {BASE_URL}/docs")


if __name__ == "__main__":
    main()
