from .ui import App


def main():
    App().mainloop()


if __name__ == "__main__":
    main()
