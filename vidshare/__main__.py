from vidshare.lifecycle.runner import main

if __name__ == "__main__":
    main()
