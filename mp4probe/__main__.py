from mp4probe.main import main

main()
