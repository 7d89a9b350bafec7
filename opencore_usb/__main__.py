from opencore_usb.cli import main

if __name__ == "__main__":
    main()
