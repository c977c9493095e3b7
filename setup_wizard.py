#!/usr/bin/env python3
"""
Iron-Term Setup Wizard

A simple command-line setup wizard to configure Aliyun speech credentials,
the tmux session to watch and storage settings for new users. Values are
saved to the Iron-Term config file; environment variables still override them.
"""

import sys

from ironterm.config_manager import default_tmux_path, get_config_manager

SECRET_KEYS = ("aliyun_access_key_secret", "aliyun_nls_token")


def print_banner():
    """Print the setup wizard banner."""
    print("=" * 60)
    print("           IRON-TERM SETUP WIZARD")
    print("=" * 60)
    print()
    print("Welcome! This wizard will help you configure Iron-Term.")
    print("Transcription needs an Aliyun NLS app key plus a token or access key.")
    print()


def get_user_input(prompt: str, default: str = "") -> str:
    """Get user input with a default value."""
    if default:
        user_input = input(f"{prompt} [{default}]: ").strip()
        return user_input if user_input else default
    else:
        return input(f"{prompt}: ").strip()


def mask(value: str) -> str:
    return value[:4] + "..." + value[-4:] if len(value) > 12 else "***"


def prompt_credential(config_manager, key_name: str, label: str) -> None:
    existing = config_manager.get_api_key(key_name)
    hint = f" (current: {mask(existing)}, Enter to keep)" if existing else " (or press Enter to skip)"
    value = get_user_input(f"{label}{hint}")
    if value:
        config_manager.set_api_key(key_name, value)
        print(f"✓ {label} saved!")
    elif existing:
        print(f"⏭ Keeping existing {label}.")
    else:
        print(f"⏭ Skipping {label}.")


def setup_credentials(config_manager):
    """Set up Aliyun NLS credentials."""
    print("Aliyun Speech Credentials")
    print("-" * 30)
    print()
    print("Create an app in the Intelligent Speech Interaction console to get an app key.")
    print()

    prompt_credential(config_manager, "aliyun_app_key", "App key")
    print()
    print("Either paste a token directly, or an access key pair to mint tokens on demand.")
    prompt_credential(config_manager, "aliyun_access_key_id", "AccessKey ID")
    prompt_credential(config_manager, "aliyun_access_key_secret", "AccessKey secret")
    prompt_credential(config_manager, "aliyun_nls_token", "NLS token")
    print()


def setup_tmux(config_manager):
    """Set up the tmux watchdog."""
    print("tmux Watchdog")
    print("-" * 20)
    print()

    current = config_manager.get_tmux_settings()
    enabled = get_user_input("Watch a tmux session? (y/n)", "y" if current["enabled"] else "n")
    settings = {"enabled": enabled.lower().startswith("y")}
    if settings["enabled"]:
        settings["path"] = get_user_input("tmux executable", current.get("path") or default_tmux_path())
        settings["session"] = get_user_input(
            "Session to watch (Enter for the first available)", current.get("session") or ""
        )
        settings["window"] = get_user_input("Window index", str(current.get("window") or "0"))
        settings["pane"] = get_user_input("Pane index", str(current.get("pane") or "0"))

        poll_ms = get_user_input("Poll interval in ms", str(current["poll_ms"]))
        try:
            settings["poll_ms"] = max(250, int(poll_ms))
        except ValueError:
            print(f"⚠ Invalid interval '{poll_ms}', keeping {current['poll_ms']}ms.")

    config_manager.update_tmux_settings(settings)
    print("✓ tmux settings saved!")
    print()


def setup_app_settings(config_manager):
    """Set up storage and HUD placement."""
    print("App Settings")
    print("-" * 15)
    print()

    current = config_manager.get_app_settings()
    data_dir = get_user_input("Data directory for cards", current["data_dir"])
    hud = get_user_input(
        "HUD display index (Enter for the first external display)",
        str(current["hud_display_index"] or ""),
    )

    config = config_manager._load_config()
    app_settings = config.setdefault("app_settings", {})
    app_settings["data_dir"] = data_dir
    if hud.isdigit() and int(hud) >= 1:
        app_settings["hud_display_index"] = int(hud)
    elif hud:
        print(f"⚠ Invalid display index '{hud}', using automatic placement.")
        app_settings["hud_display_index"] = None
    else:
        app_settings["hud_display_index"] = None
    config_manager._save_config(config)
    print(f"✓ Cards will be stored in: {data_dir}")


def show_summary(config_manager):
    """Show a summary of the configuration."""
    print()
    print("Configuration Summary")
    print("-" * 25)
    print()

    config = config_manager._load_config()

    api_keys = {k: v for k, v in config.get("api_keys", {}).items() if v}
    if api_keys:
        print("✓ Credentials configured:")
        for name, value in api_keys.items():
            print(f"   {name}: {mask(value) if name in SECRET_KEYS else value}")
    else:
        print("⚠ No credentials configured")

    print()

    tmux = config_manager.get_tmux_settings()
    if tmux["enabled"]:
        session = tmux.get("session") or "<first available>"
        print(f"✓ tmux: {session}:{tmux['window']}.{tmux['pane']} every {tmux['poll_ms']}ms via {tmux['path']}")
    else:
        print("⏭ tmux watchdog disabled")

    print()

    app_settings = config_manager.get_app_settings()
    print("✓ App Settings:")
    for key, value in app_settings.items():
        print(f"   {key}: {value}")

    print()

    if config_manager.is_configured():
        print("🎉 Configuration complete! You can now run Iron-Term.")
        print()
        print("Next steps:")
        print("1. Run 'ironterm' (or 'python controller.py') to start the control core")
        print("2. Launch the overlay; it connects to http://127.0.0.1:8765")
    else:
        print("⚠ Transcription is not configured yet. Missing:")
        for item in config_manager.get_missing_config():
            print(f"   - {item}")
        print()
        print("You can run this setup wizard again anytime with:")
        print("   python setup_wizard.py")


def main():
    """Main setup wizard function."""
    try:
        print_banner()

        config_manager = get_config_manager()

        setup_credentials(config_manager)
        setup_tmux(config_manager)
        setup_app_settings(config_manager)

        show_summary(config_manager)

        print()
        print("=" * 60)
        print("Setup wizard completed!")
        print("=" * 60)

    except KeyboardInterrupt:
        print("\n\nSetup cancelled by user.")
        sys.exit(1)
    except (OSError, ValueError) as e:
        print(f"\nError during setup: {e}")
        print("Please check your configuration and try again.")
        sys.exit(1)


if __name__ == "__main__":
    main()
