"""Quick check for Amadeus credentials"""
import sys

from amadeus_client import FlightSearchError, TokenManager
from config import config_diagnostics, load_config


def main() -> int:
    print("=" * 50)
    print("Checking Amadeus API Credentials")
    print("=" * 50)
    print(config_diagnostics())
    print()

    try:
        manager = TokenManager(load_config().to_amadeus_config())
        manager.get_token()
    except FlightSearchError as e:
        print(f"❌ FAILED: {e.code.value}")
        print(f"   {e.message}")
        if e.details:
            print(f"   Details: {e.details}")
        print("=" * 50)
        return 1

    print("✅ SUCCESS! Your credentials are VALID.")
    print(f"   Token expires in: {int(manager.seconds_until_expiry)} seconds")
    print()
    print("Meeting searches are ready to use the Amadeus API!")
    print("=" * 50)
    return 0


if __name__ == "__main__":
    sys.exit(main())
